import logging
import time
from fastapi import Request, Response
from fastapi import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

logger = logging.getLogger("stockrewards")


class LoggingMiddleware(BaseHTTPMiddleware):
    """요청/응답 로깅 (상태 코드에 따라 로그 레벨 분리)"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start = time.time()
        method = request.method
        path = request.url.path
        client = request.client.host if request.client else "-"

        logger.info(f"[Request] {method} {path} from {client}")
        try:
            response = await call_next(request)
        except HTTPException as http_exc:
            if http_exc.status_code >= 500:
                logger.error(
                    f"[HTTPException] {method} {path} from {client} -> {http_exc.status_code}: {http_exc.detail}"
                )
            else:
                logger.warning(
                    f"[HTTPException] {method} {path} from {client} -> {http_exc.status_code}: {http_exc.detail}"
                )
            raise
        except Exception:
            logger.exception(f"[Unhandled Error] {method} {path} from {client}")
            raise

        duration_ms = (time.time() - start) * 1000
        message = f"[Response] {method} {path} from {client} -> {response.status_code} in {duration_ms:.1f}ms"
        if response.status_code >= 500:
            logger.error(message)
        elif response.status_code >= 400:
            logger.warning(message)
        else:
            logger.info(message)
        return response
