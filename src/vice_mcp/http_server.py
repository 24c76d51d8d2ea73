#!/usr/bin/env python3
"""
FastAPI HTTP API server for VICE debugging.
Exposes the core binary monitor operations as REST endpoints for scripts,
curl and other HTTP clients.
"""

from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
import uvicorn

from . import __version__
from .c64 import (
    CIA2_PORT_A,
    SCREEN_SIZE,
    VIC_BASE,
    format_address,
    get_vic_bank,
    get_video_addresses,
    screen_to_text,
)
from .client import ViceClient
from .config import (
    ADDRESS_MAX,
    HTTP_HOST,
    HTTP_PORT,
    VICE_HOST,
    VICE_PORT,
    configure_logging,
    get_connection_info,
)
from .errors import (
    CommandError,
    ConnectionError as ViceConnectionError,
    ProtocolError,
    ValidationError,
    ViceError,
)


# Request/response models
class StatusResponse(BaseModel):
    success: bool
    message: str
    data: Optional[dict] = None


class ConnectRequest(BaseModel):
    host: str = VICE_HOST
    port: int = Field(VICE_PORT, ge=1, le=65535)


class WriteMemoryRequest(BaseModel):
    address: int
    bytes: List[int]


class StepRequest(BaseModel):
    count: int = 1
    step_over: bool = False


class ResetRequest(BaseModel):
    hard: bool = False


class BreakpointRequest(BaseModel):
    address: int
    end_address: Optional[int] = None
    enabled: bool = True
    temporary: bool = False


class WatchpointRequest(BaseModel):
    start_address: int
    end_address: Optional[int] = None
    type: str = "store"
    enabled: bool = True
    temporary: bool = False


class CheckpointInfo(BaseModel):
    id: int
    kind: str
    start_address: int
    end_address: int
    enabled: bool
    temporary: bool


def _http_error(error: ViceError) -> HTTPException:
    """Map a classified error to an HTTP status with the error object as detail."""
    if isinstance(error, ValidationError):
        status_code = 400
    elif isinstance(error, ViceConnectionError):
        status_code = 503
    elif isinstance(error, (CommandError, ProtocolError)):
        status_code = 502
    else:
        status_code = 500
    return HTTPException(status_code=status_code, detail=error.to_dict())


def create_app(client: ViceClient) -> FastAPI:
    """Build the REST API around an injected client."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await client.disconnect()

    app = FastAPI(
        title="VICE HTTP API",
        description="REST API for debugging the VICE C64 emulator through its binary monitor",
        version=__version__,
        lifespan=lifespan,
    )

    # Enable CORS for local development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root():
        """API root endpoint."""
        return {
            "name": "VICE HTTP API",
            "version": __version__,
            "status": "running",
            "config": get_connection_info(),
        }

    @app.get("/status")
    async def get_status():
        """Report connection and run state."""
        state = client.get_state()
        data = {"connected": state.connected, "running": state.running}
        if state.connected:
            data["host"] = state.host
            data["port"] = state.port
        return StatusResponse(
            success=True,
            message="Connected to VICE" if state.connected else "Not connected",
            data=data,
        )

    @app.post("/connect")
    async def connect(request: ConnectRequest):
        try:
            await client.connect(request.host, request.port)
        except ViceError as e:
            raise _http_error(e)
        return StatusResponse(
            success=True,
            message=f"Connected to VICE at {request.host}:{request.port}",
            data={"host": request.host, "port": request.port},
        )

    @app.post("/disconnect")
    async def disconnect():
        was_connected = client.get_state().connected
        await client.disconnect()
        return StatusResponse(
            success=True,
            message="Disconnected from VICE" if was_connected else "Was not connected",
            data={"was_connected": was_connected},
        )

    @app.get("/memory")
    async def read_memory(address: int, length: int = 256):
        """Read length bytes starting at address."""
        end_address = min(address + length - 1, ADDRESS_MAX)
        try:
            data = await client.read_memory(address, end_address)
        except ViceError as e:
            raise _http_error(e)
        return {
            "address": format_address(address),
            "length": len(data),
            "bytes": list(data),
            "hex": data.hex(),
        }

    @app.post("/memory")
    async def write_memory(request: WriteMemoryRequest):
        try:
            await client.write_memory(request.address, request.bytes)
        except ViceError as e:
            raise _http_error(e)
        return StatusResponse(
            success=True,
            message=f"Wrote {len(request.bytes)} byte(s) to ${request.address:04x}",
        )

    @app.get("/registers")
    async def get_registers():
        try:
            registers = await client.get_registers()
        except ViceError as e:
            raise _http_error(e)
        return {
            "registers": registers.values,
            "flags": registers.flags.to_dict(),
        }

    @app.post("/step")
    async def step(request: StepRequest):
        try:
            await client.step(request.count, request.step_over)
        except ViceError as e:
            raise _http_error(e)
        return StatusResponse(success=True, message=f"Stepped {request.count} instruction(s)")

    @app.post("/continue")
    async def continue_execution():
        try:
            await client.continue_execution()
        except ViceError as e:
            raise _http_error(e)
        return StatusResponse(success=True, message="Execution resumed")

    @app.post("/reset")
    async def reset(request: ResetRequest):
        try:
            await client.reset(request.hard)
        except ViceError as e:
            raise _http_error(e)
        reset_type = "hard" if request.hard else "soft"
        return StatusResponse(success=True, message=f"{reset_type.capitalize()} reset performed")

    @app.get("/checkpoints", response_model=List[CheckpointInfo])
    async def list_checkpoints():
        """Breakpoints and watchpoints set through this server."""
        return [
            CheckpointInfo(
                id=cp.id,
                kind=cp.kind,
                start_address=cp.start_address,
                end_address=cp.end_address,
                enabled=cp.enabled,
                temporary=cp.temporary,
            )
            for cp in client.list_checkpoints()
        ]

    @app.post("/breakpoints")
    async def set_breakpoint(request: BreakpointRequest):
        try:
            checkpoint_id = await client.set_breakpoint(
                request.address,
                request.end_address,
                enabled=request.enabled,
                temporary=request.temporary,
            )
        except ViceError as e:
            raise _http_error(e)
        return StatusResponse(
            success=True,
            message=f"Breakpoint {checkpoint_id} set at ${request.address:04x}",
            data={"id": checkpoint_id},
        )

    @app.post("/watchpoints")
    async def set_watchpoint(request: WatchpointRequest):
        try:
            checkpoint_id = await client.set_watchpoint(
                request.start_address,
                request.end_address,
                request.type,
                enabled=request.enabled,
                temporary=request.temporary,
            )
        except ViceError as e:
            raise _http_error(e)
        return StatusResponse(
            success=True,
            message=f"Watchpoint {checkpoint_id} set at ${request.start_address:04x} ({request.type})",
            data={"id": checkpoint_id},
        )

    @app.delete("/checkpoints/{checkpoint_id}")
    async def delete_checkpoint(checkpoint_id: int):
        try:
            await client.delete_breakpoint(checkpoint_id)
        except ViceError as e:
            raise _http_error(e)
        return StatusResponse(success=True, message=f"Checkpoint {checkpoint_id} deleted")

    @app.get("/screen")
    async def read_screen():
        """Screen RAM as 25 lines of text, read from wherever the VIC-II points."""
        try:
            bank_info = get_vic_bank((await client.read_memory(CIA2_PORT_A, CIA2_PORT_A))[0])
            d018 = (await client.read_memory(VIC_BASE + 0x18, VIC_BASE + 0x18))[0]
            screen_address = get_video_addresses(d018, bank_info["base_address"])["screen_address"]
            screen_data = await client.read_memory(screen_address, screen_address + SCREEN_SIZE - 1)
        except ViceError as e:
            raise _http_error(e)
        return {
            "screen_address": format_address(screen_address),
            "vic_bank": bank_info["bank"],
            "lines": screen_to_text(screen_data),
        }

    return app


def main():
    """Main entry point for the HTTP API server."""
    configure_logging()
    app = create_app(ViceClient())

    print(f"Starting VICE HTTP API Server on http://{HTTP_HOST}:{HTTP_PORT}")
    print(f"VICE binary monitor: {VICE_HOST}:{VICE_PORT}")
    print(f"\nAPI Documentation: http://{HTTP_HOST}:{HTTP_PORT}/docs")

    uvicorn.run(app, host=HTTP_HOST, port=HTTP_PORT)


if __name__ == "__main__":
    main()
