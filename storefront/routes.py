import traceback

import structlog
from fastapi import APIRouter, Depends, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from storefront.auth import verify_token
from storefront.dependencies import get_intent_service, get_notification_trigger, get_reconciler
from storefront.errors import StorefrontError
from storefront.notifications import NotificationTrigger
from storefront.payment_intents import PaymentIntentService
from storefront.reconciler import WebhookReconciler
from storefront.schemas import CreatePaymentRequest, NotificationRequest

logger = structlog.get_logger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}

router = APIRouter()


def preflight():
    return Response(status_code=204, headers=CORS_HEADERS)


for path in ("/create-payment", "/payment-webhook", "/order-notifications"):
    router.add_api_route(path, preflight, methods=["OPTIONS"], include_in_schema=False)


@router.post("/create-payment")
def create_payment_api(
    body: CreatePaymentRequest,
    request: Request,
    auth=Depends(verify_token),
    service: PaymentIntentService = Depends(get_intent_service),
):
    intent = service.create(
        body.order_id,
        body.items,
        body.total,
        origin=request.headers.get("origin"),
    )
    return {
        "success": True,
        "init_point": intent.redirect_url,
        "preference_id": intent.id,
        "sandbox_init_point": intent.sandbox_redirect_url,
    }


def _server_error(message, exc, status_code=500):
    return JSONResponse(
        {
            "error": message,
            "stack": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        },
        status_code=status_code,
    )


@router.post("/payment-webhook")
async def payment_webhook(request: Request, reconciler: WebhookReconciler = Depends(get_reconciler)):
    raw = await request.body()
    try:
        outcome = await run_in_threadpool(reconciler.handle, raw, dict(request.query_params))
    except StorefrontError as exc:
        if exc.status_code < 500:
            logger.warning("webhook_rejected", code=exc.code, error=exc.message)
            return JSONResponse({"error": exc.message, "code": exc.code}, status_code=exc.status_code)
        logger.error("webhook_failed", code=exc.code, error=exc.message)
        return _server_error(exc.message, exc, exc.status_code)
    except Exception as exc:
        logger.exception("webhook_crashed", error=str(exc))
        return _server_error(str(exc) or type(exc).__name__, exc)

    if not outcome.handled:
        return {"success": True, "message": "Unhandled webhook type."}
    return {"success": True}


@router.post("/order-notifications")
def order_notifications(
    body: NotificationRequest,
    auth=Depends(verify_token),
    trigger: NotificationTrigger = Depends(get_notification_trigger),
):
    result = trigger.notify(body.record)
    return JSONResponse(result.to_response(), status_code=200 if result.success else 500)
