"""
GraphQL view with idempotency and logging support.
"""
import hashlib
import json
import logging
from uuid import UUID, uuid4

from ariadne import graphql_sync
from django.conf import settings
from django.db import IntegrityError, transaction
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods
from graphql import GraphQLError, OperationType, get_operation_ast, parse

from ordering.api.middleware import ErrorHandler
from ordering.api.schema import format_error, schema
from ordering.infra.models import IdempotencyKey
from ordering.infra.pii_masker import mask_pii_in_dict, mask_uuid

logger = logging.getLogger(__name__)


# Root mutation field -> stored idempotency operation.
MUTATION_OPERATIONS = {
    "checkout": "CHECKOUT",
    "addToCart": "ADD_TO_CART",
    "cancelOrder": "CANCEL_ORDER",
    "updateOrderStatus": "UPDATE_ORDER_STATUS",
    "updatePaymentStatus": "UPDATE_PAYMENT_STATUS",
    "createInvoice": "CREATE_INVOICE",
    "updateInvoice": "UPDATE_INVOICE",
    "suppressNotification": "SUPPRESS_NOTIFICATION",
    "retryNotification": "RETRY_NOTIFICATION",
    "retryFailedNotifications": "RETRY_FAILED_NOTIFICATIONS",
    "recordNotificationFeedback": "RECORD_NOTIFICATION_FEEDBACK",
}


class OrderingGraphQLView:
    """GraphQL view with idempotency and structured logging."""

    def dispatch(self, request, *args, **kwargs):
        """Handle GraphQL request with idempotency."""
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        idempotency_key = request.headers.get("Idempotency-Key")
        user_id = request.headers.get("X-User-ID")

        log_data = {
            "request_id": request_id,
            "user_id": mask_uuid(user_id) if user_id else None,
            "idempotency_key": idempotency_key[:8] + "..." if idempotency_key else None,
            "operation": "graphql",
        }
        logger.info("graphql_request", extra=mask_pii_in_dict(log_data))

        if request.method == "GET":
            return JsonResponse({"message": "GraphQL endpoint. Use POST for queries."})

        try:
            data = json.loads(request.body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return ErrorHandler.error_response("INVALID_JSON", "Invalid JSON")
        if not isinstance(data, dict):
            return ErrorHandler.error_response("INVALID_JSON", "Request body must be a JSON object")

        user_uuid = self._parse_user_id(user_id, request_id)
        operation = self._extract_operation(data)

        if idempotency_key and user_uuid and operation:
            response = self._dispatch_idempotent(request, data, idempotency_key, user_uuid, operation, request_id)
        else:
            response = self._process_graphql_request(request, data)

        logger.info(
            "graphql_response",
            extra={
                "request_id": request_id,
                "user_id": mask_uuid(user_id) if user_id else None,
                "status": response.status_code,
            },
        )
        return response

    def _dispatch_idempotent(self, request, data, idempotency_key, user_uuid, operation, request_id):
        request_hash = self._create_request_hash(data.get("query", ""), data.get("variables") or {})

        existing = IdempotencyKey.objects.filter(
            key=idempotency_key,
            user_id=user_uuid,
            operation=operation,
        ).first()

        if existing:
            if existing.request_hash == request_hash:
                logger.info(
                    "idempotent_request_cached",
                    extra={
                        "request_id": request_id,
                        "user_id": mask_uuid(str(user_uuid)),
                        "idempotency_key": idempotency_key,
                        "operation": operation,
                    },
                )
                return JsonResponse(existing.response_payload, safe=False)

            # Different request with same key - conflict
            logger.warning(
                "idempotency_key_conflict",
                extra={
                    "request_id": request_id,
                    "user_id": mask_uuid(str(user_uuid)),
                    "idempotency_key": idempotency_key,
                },
            )
            return ErrorHandler.error_response(
                "DUPLICATE_REQUEST",
                "Idempotency key already used with different request",
            )

        response = self._process_graphql_request(request, data)

        # Only successful results are replayed; a failed attempt may be retried.
        response_data = json.loads(response.content)
        if response.status_code == 200 and not response_data.get("errors"):
            try:
                with transaction.atomic():
                    IdempotencyKey.objects.create(
                        key=idempotency_key,
                        user_id=user_uuid,
                        operation=operation,
                        request_hash=request_hash,
                        response_payload=response_data,
                    )
            except IntegrityError:
                logger.warning(
                    "idempotency_key_race",
                    extra={
                        "request_id": request_id,
                        "idempotency_key": idempotency_key,
                        "operation": operation,
                    },
                )
        return response

    def _parse_user_id(self, user_id, request_id):
        if not user_id:
            return None
        try:
            return UUID(user_id)
        except (ValueError, TypeError):
            logger.warning(
                "invalid_user_id",
                extra={"request_id": request_id},
            )
            return None

    def _create_request_hash(self, query: str, variables: dict) -> str:
        """Create hash of request for deduplication."""
        content = json.dumps({"query": query, "variables": variables}, sort_keys=True)
        return hashlib.sha256(content.encode()).hexdigest()

    def _extract_operation(self, data: dict) -> str | None:
        """Idempotency operation of a mutation request, None for anything else."""
        try:
            document = parse(data.get("query") or "")
        except GraphQLError:
            return None
        operation = get_operation_ast(document, data.get("operationName"))
        if operation is None or operation.operation != OperationType.MUTATION:
            return None
        selection = operation.selection_set.selections[0]
        root_field = selection.name.value if getattr(selection, "name", None) else ""
        return MUTATION_OPERATIONS.get(root_field, "UNKNOWN")

    def _process_graphql_request(self, request, data: dict):
        """Execute GraphQL query."""
        success, result = graphql_sync(
            schema,
            data,
            context_value={"request": request},
            error_formatter=format_error,
            debug=settings.DEBUG,
        )
        status_code = 200 if success else 400
        return JsonResponse(result, status=status_code)


@csrf_exempt
@require_http_methods(["GET", "POST"])
def graphql_view(request):
    """GraphQL endpoint."""
    try:
        return OrderingGraphQLView().dispatch(request)
    except Exception as e:
        return ErrorHandler.handle_error(e)
