"""
api — FastAPI router package.
"""

from .router_networks import router as networks_router
from .router_devices import router as devices_router
from .router_training import router as training_router
from .router_stream import router as stream_router
