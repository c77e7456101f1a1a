from dialogue_engine.infrastructure.transport.single_shot_transport import (
    SingleShotConnection,
    SingleShotTransport,
)
from dialogue_engine.infrastructure.transport.streaming_transport import (
    StreamConnection,
    StreamingTransport,
)

__all__ = [
    "SingleShotConnection",
    "SingleShotTransport",
    "StreamConnection",
    "StreamingTransport",
]
