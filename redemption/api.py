from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Header, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings
from .logging_utils import configure_logging
from .models import (
    ErrorKind, ErrorResponse, RedeemRequest, RedemptionResult,
    PublicConfig, OutcomeHistoryResponse,
)
from .service import RedemptionService, RedemptionError, build_storage

ERROR_STATUS = {
    ErrorKind.INVALID_INPUT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.ALREADY_USED: status.HTTP_409_CONFLICT,
    ErrorKind.CONFIG_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def create_app(
    service: Optional[RedemptionService] = None,
    settings: Optional[Settings] = None,
    root_path: str = "",
) -> FastAPI:
    settings = settings or Settings.from_env()
    if service is None:
        service = RedemptionService(storage=build_storage(settings), settings=settings)

    @asynccontextmanager
    async def lifespan(app):
        configure_logging(settings.log_level)
        yield

    app = FastAPI(
        title="Code Redemption API",
        description="Single-use code redemption against a shared prize pool",
        version="1.0.0",
        root_path=root_path,
        lifespan=lifespan,
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RedemptionError)
    async def redemption_error_handler(request: Request, exc: RedemptionError):
        body = ErrorResponse(error=exc.kind, detail=str(exc))
        return JSONResponse(status_code=ERROR_STATUS[exc.kind], content=body.model_dump(mode="json"))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        detail = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
        body = ErrorResponse(error=ErrorKind.INVALID_INPUT, detail=detail or "Malformed request")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump(mode="json"))

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "code-redemption"}

    @app.post(
        "/redeem",
        response_model=RedemptionResult,
        responses={code: {"model": ErrorResponse} for code in ERROR_STATUS.values()},
        tags=["Redemption"],
    )
    def redeem(request: RedeemRequest, x_requester_id: Optional[str] = Header(default=None)) -> RedemptionResult:
        return service.redeem(request.code, requester_id=x_requester_id)

    @app.get("/config", response_model=PublicConfig, response_model_exclude_none=True, tags=["Redemption"])
    def get_public_config() -> PublicConfig:
        return service.get_public_config()

    @app.get("/outcomes", response_model=OutcomeHistoryResponse, tags=["Audit"])
    def get_outcomes(limit: int = 50, offset: int = 0, code: Optional[str] = None) -> OutcomeHistoryResponse:
        return service.get_outcome_history(limit, offset, code)

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
