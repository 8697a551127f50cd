"""
models — Pydantic schema package.
==================================
Re-exports all schemas for convenient imports.
"""

from .base_models import *
from .network_models import *
from .device_models import *
from .training_models import *
from .stream_models import *
