"""API routes for emulator acquisition and shutdown."""

from fastapi import APIRouter, HTTPException, Request

from emupool.models import (
    AcquireDeviceRequest,
    BootTimeoutError,
    ControlChannelError,
    CorruptProfileConfigError,
    DeviceError,
    DeviceIdRequest,
    MalformedDeviceIdError,
    NoProfilesConfiguredError,
    ProfileNotFoundError,
)

router = APIRouter(prefix="/api/v1/emulators", tags=["emulators"])


def _get_driver(request: Request):
    """Get the EmulatorDriver from app state."""
    driver = request.app.state.emulator_driver
    if driver is None:
        raise HTTPException(status_code=503, detail="Emulator driver not initialized")
    return driver


def _handle_device_error(e: DeviceError) -> HTTPException:
    """Map a DeviceError to an appropriate HTTPException."""
    msg = str(e)
    if isinstance(e, ProfileNotFoundError):
        return HTTPException(status_code=404, detail=msg)
    if isinstance(e, (NoProfilesConfiguredError, CorruptProfileConfigError)):
        return HTTPException(status_code=422, detail=msg)
    if isinstance(e, BootTimeoutError):
        return HTTPException(status_code=504, detail=msg)
    if isinstance(e, ControlChannelError):
        return HTTPException(status_code=502, detail=msg)
    if isinstance(e, MalformedDeviceIdError):
        return HTTPException(status_code=400, detail=msg)
    return HTTPException(status_code=500, detail=f"[{e.tool}] {msg}")


@router.post("/acquire")
async def acquire_emulator(request: Request, body: AcquireDeviceRequest):
    """Acquire a booted emulator for an AVD, held exclusively for the caller.

    Workers on the same host should send their ``owner_pid`` so the slot is
    freed if they crash without releasing it.

    Returns 404 if the AVD is not installed, 422 if the environment needs
    fixing, 504 if the emulator never finished booting.
    """
    driver = _get_driver(request)
    try:
        device_id = await driver.acquire_free_device(body.avd_name, owner_pid=body.owner_pid)
    except DeviceError as e:
        raise _handle_device_error(e)
    return {"device_id": device_id, "avd_name": body.avd_name}


@router.post("/shutdown")
async def shutdown_emulator(request: Request, body: DeviceIdRequest):
    """Kill an emulator via its console. Does not release the registry slot."""
    driver = _get_driver(request)
    try:
        await driver.shutdown(body.device_id)
    except DeviceError as e:
        raise _handle_device_error(e)
    return {"status": "shutdown", "device_id": body.device_id}


@router.post("/release")
async def release_emulator(request: Request, body: DeviceIdRequest):
    """Return a held emulator to the registry so other workers can reuse it."""
    driver = _get_driver(request)
    try:
        await driver.release_device(body.device_id)
    except DeviceError as e:
        raise _handle_device_error(e)
    return {"status": "released", "device_id": body.device_id}


@router.get("/busy")
async def list_busy_emulators(request: Request):
    """List emulators currently held by any worker."""
    driver = _get_driver(request)
    devices = driver.registry.busy_devices()
    return {
        "devices": [d.model_dump(mode="json") for d in devices],
        "total": len(devices),
    }
