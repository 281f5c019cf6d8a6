import uuid
from typing import Dict, List

from fastapi import APIRouter, HTTPException, Request
from pydantic import ValidationError

from combosim.data.presets import DEFAULT_COMBO, DEFAULT_DECK, DEFAULT_HAND_SIZE, DEFAULT_TRIALS
from combosim.models import ParseResult, SampleHand, SimulationResult, SimulationStatus, TextSimulationRequest
from combosim.services.sim_runner import InMemorySimulationRunner, parse_text_request, sample_text_request
from combosim.services.session import SimulationError

router = APIRouter(tags=["simulations"])


def get_runner(request: Request) -> InMemorySimulationRunner:
    return request.app.state.runner


@router.post("/parse", response_model=ParseResult)
async def parse(request: TextSimulationRequest) -> ParseResult:
    return parse_text_request(request)


@router.post("/sample", response_model=SampleHand)
async def sample(request: TextSimulationRequest) -> SampleHand:
    return sample_text_request(request)


@router.post("/simulations")
async def create_simulation(request: TextSimulationRequest, http_request: Request) -> Dict[str, str]:
    sim_id = str(uuid.uuid4())
    try:
        status = get_runner(http_request).start(sim_id, request)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except SimulationError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"id": sim_id, "status": status.status}


@router.get("/simulations/{sim_id}", response_model=SimulationResult)
async def get_simulation(sim_id: str, http_request: Request) -> SimulationResult:
    result = get_runner(http_request).get(sim_id)
    if not result:
        raise HTTPException(status_code=404, detail="Simulation not found or not complete")
    return result


@router.get("/simulations/{sim_id}/status", response_model=SimulationStatus)
async def get_simulation_status(sim_id: str, http_request: Request) -> SimulationStatus:
    status = get_runner(http_request).status(sim_id)
    if not status:
        raise HTTPException(status_code=404, detail="Simulation not found")
    return status


@router.post("/estimate", response_model=SimulationResult)
async def estimate(request: TextSimulationRequest, http_request: Request) -> SimulationResult:
    try:
        result = await get_runner(http_request).estimate(request)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except SimulationError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    if result is None:
        raise HTTPException(status_code=409, detail="Simulation skipped or superseded")
    return result


@router.get("/cache")
async def get_cache(http_request: Request) -> List:
    return get_runner(http_request).cache_snapshot()


@router.get("/libraries/defaults")
async def get_defaults() -> Dict:
    return {
        "deck": DEFAULT_DECK,
        "combo": DEFAULT_COMBO,
        "hand_size": DEFAULT_HAND_SIZE,
        "trials": DEFAULT_TRIALS,
    }
