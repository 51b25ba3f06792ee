"""
Webhook HTTP 客户端
"""
import logging
from typing import Any, Dict, Optional

import httpx

from ..exceptions import WebhookError


logger = logging.getLogger(__name__)


class WebhookClient:
    """
    基于 httpx 的 webhook 调用

    超时和非 2xx 响应都抛出 WebhookError，由解释器按步骤异常处理。
    """

    def __init__(self, timeout: float = 10.0, transport: httpx.AsyncBaseTransport = None):
        self.timeout = timeout
        self.transport = transport

    async def call(
        self,
        step_id: str,
        url: str,
        method: str = "POST",
        headers: Dict[str, str] = None,
        body: Any = None,
        timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        """发起请求，返回状态码和响应内容"""
        method = method.upper()
        client_kwargs: Dict[str, Any] = {"timeout": timeout or self.timeout}
        if self.transport is not None:
            client_kwargs["transport"] = self.transport

        kwargs: Dict[str, Any] = {"method": method, "url": url, "headers": headers or {}}
        if body is not None and method not in ("GET", "HEAD", "DELETE"):
            if isinstance(body, (dict, list)):
                kwargs["json"] = body
            else:
                kwargs["content"] = str(body)

        logger.info(f"Calling webhook {method} {url} for step '{step_id}'")

        try:
            async with httpx.AsyncClient(**client_kwargs) as client:
                response = await client.request(**kwargs)
        except httpx.TimeoutException as e:
            raise WebhookError(step_id, f"request to {url} timed out", cause=e)
        except httpx.HTTPError as e:
            raise WebhookError(step_id, f"request to {url} failed: {e}", cause=e)

        if not response.is_success:
            raise WebhookError(
                step_id,
                f"{url} responded with status {response.status_code}",
                status_code=response.status_code
            )

        try:
            data = response.json()
        except ValueError:
            data = response.text

        return {"statusCode": response.status_code, "response": data}
