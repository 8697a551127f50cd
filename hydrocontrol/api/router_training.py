"""
router_training.py — API endpoints for DRL model training.
==========================================================
Prefix: /api  (networks/{id}/drl-model, drl-models/{id}/...)
"""

from fastapi import APIRouter, Depends

from hydrocontrol.core.errors import ModelNotFound
from hydrocontrol.models.training_models import ProvisionRequest, TrainingStateResponse
from hydrocontrol.services.container import Services
from hydrocontrol.services.training_scheduler import TrainingScheduler

from .deps import get_scheduler, get_services

router = APIRouter(prefix="/api", tags=["DRL Training"])


@router.get(
    "/networks/{network_id}/drl-model",
    response_model=TrainingStateResponse,
    summary="Get the network's DRL model",
)
async def get_drl_model(network_id: int, services: Services = Depends(get_services)):
    await services.coordinator.get_network(network_id)
    state = await services.repository.get_training_state_by_network(network_id)
    if state is None:
        raise ModelNotFound(f"No DRL model for network {network_id}", entity_id=network_id)
    return TrainingStateResponse.from_state(state)


@router.post(
    "/networks/{network_id}/drl-model",
    response_model=TrainingStateResponse,
    status_code=201,
    summary="Provision the network's DRL model",
)
async def provision_drl_model(
    network_id: int,
    req: ProvisionRequest,
    scheduler: TrainingScheduler = Depends(get_scheduler),
):
    """
    Create the network's single DRL model in the paused state.

    **Example request:**
    ```json
    {"algorithm": "PPO", "totalEpisodes": 3000, "learningRate": 0.0003, "exploration": 0.1}
    ```
    """
    state = await scheduler.provision(
        network_id,
        algorithm=req.algorithm,
        total_episodes=req.total_episodes,
        learning_rate=req.learning_rate,
        exploration=req.exploration,
    )
    return TrainingStateResponse.from_state(state)


@router.post(
    "/drl-models/{model_id}/start-training",
    response_model=TrainingStateResponse,
    summary="Start or resume training",
)
async def start_training(model_id: int, scheduler: TrainingScheduler = Depends(get_scheduler)):
    """Begins one training episode every step interval; 409 if already training."""
    return TrainingStateResponse.from_state(await scheduler.start(model_id))


@router.post(
    "/drl-models/{model_id}/pause-training",
    response_model=TrainingStateResponse,
    summary="Pause training",
)
async def pause_training(model_id: int, scheduler: TrainingScheduler = Depends(get_scheduler)):
    return TrainingStateResponse.from_state(await scheduler.pause(model_id))


@router.post(
    "/drl-models/{model_id}/save",
    response_model=TrainingStateResponse,
    summary="Save a model checkpoint",
)
async def save_model(model_id: int, scheduler: TrainingScheduler = Depends(get_scheduler)):
    return TrainingStateResponse.from_state(await scheduler.save(model_id))
