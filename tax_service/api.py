"""
HTTP interface: ``POST /calculate-tax``.

The jurisdiction index is loaded once in the application lifespan and
kept on ``app.state``; each request resolves against it without
touching shared state.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Union

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
from starlette.exceptions import HTTPException as StarletteHTTPException

from tax_service import __version__
from tax_service.calculator import (
    MAX_CUSTOM_TAX_RATE,
    MAX_PRICE,
    MAX_QUANTITY,
    OrderRequest,
    TaxResolutionError,
    calculate_tax,
)
from tax_service.config import Settings, load_settings
from tax_service.log import get_logger, setup_logging
from tax_service.rates import JurisdictionIndex

logger = get_logger(__name__)

CORS_REJECTED = "CORS policy does not allow access from this origin"
NOT_READY = "Tax rates are not loaded."


class LineItemIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    price: float = Field(ge=0, le=float(MAX_PRICE), allow_inf_nan=False)
    quantity: int = Field(default=1, ge=0, le=MAX_QUANTITY)
    use_custom_tax: bool = Field(default=False, alias="useCustomTax")
    custom_tax_rate: float = Field(
        default=0.0,
        ge=0,
        le=float(MAX_CUSTOM_TAX_RATE),
        allow_inf_nan=False,
        alias="customTaxRate",
    )


class OrderIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    products: list[LineItemIn] = Field(default_factory=list)
    seller_zip: str = Field(alias="sellerZip")
    seller_state: Optional[str] = Field(default=None, alias="sellerState")
    buyer_zip: str = Field(alias="buyerZip")
    buyer_state: Optional[str] = Field(default=None, alias="buyerState")
    delivery_method: Any = Field(default=None, alias="deliveryMethod")
    tax_rule_type: Optional[str] = Field(default=None, alias="taxRuleType")
    is_tax_exempt: bool = Field(default=False, alias="isTaxExempt")
    tax_override_group: Optional[str] = Field(
        default=None, alias="taxOverrideGroup"
    )

    @field_validator("seller_zip", "buyer_zip", mode="before")
    @classmethod
    def _zip_as_text(cls, value: Union[str, int]) -> Union[str, int]:
        # storefronts sometimes send ZIPs as JSON numbers
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(
    settings: Optional[Settings] = None,
    index: Optional[JurisdictionIndex] = None,
) -> FastAPI:
    """
    Build the API application.

    Pass ``index`` to serve a prebuilt index; otherwise the rate table at
    ``settings.rates_path`` is loaded at startup and a load failure stops
    the server from starting.
    """
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        setup_logging(settings.log_level)
        if app.state.index is None:
            app.state.index = JurisdictionIndex.from_csv(settings.rates_path)
        logger.info(
            "Serving %d jurisdictions; allowed origins: %s",
            len(app.state.index),
            ", ".join(settings.allowed_origins) or "none",
        )
        yield

    app = FastAPI(title="Sales Tax Service", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.index = index

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    allowed = set(settings.allowed_origins)

    @app.middleware("http")
    async def reject_foreign_origins(request: Request, call_next):
        origin = request.headers.get("origin")
        if origin is not None and origin not in allowed:
            logger.warning("Rejected request from origin %s", origin)
            return _error(status.HTTP_403_FORBIDDEN, CORS_REJECTED)
        return await call_next(request)

    @app.exception_handler(TaxResolutionError)
    async def tax_resolution_error(
        request: Request, exc: TaxResolutionError
    ) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}"
            for err in exc.errors()
        )
        return _error(status.HTTP_400_BAD_REQUEST, f"Invalid request: {problems}")

    @app.exception_handler(StarletteHTTPException)
    async def http_error(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            return _error(exc.status_code, "Route not found")
        return _error(exc.status_code, str(exc.detail))

    @app.get("/healthz")
    def healthz(request: Request) -> JSONResponse:
        index = request.app.state.index
        if index is None:
            return _error(status.HTTP_503_SERVICE_UNAVAILABLE, NOT_READY)
        return JSONResponse({"status": "ok", "jurisdictions": len(index)})

    @app.post("/calculate-tax")
    def calculate_tax_route(payload: OrderIn, request: Request) -> Any:
        index = request.app.state.index
        if index is None:
            return _error(status.HTTP_503_SERVICE_UNAVAILABLE, NOT_READY)
        order = OrderRequest.from_dict(payload.model_dump(by_alias=True))
        return calculate_tax(order, index).to_dict()

    return app


app = create_app()
