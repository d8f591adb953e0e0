"""
API依赖项 - 网关上下文与支付服务

上下文在进程内只创建一次；测试通过 ``app.dependency_overrides`` 替换。
"""
from functools import lru_cache

from fastapi import Depends

from application.context import GatewayContext, build_gateway_context
from application.services.payment_service import PaymentService
from core.settings import payment_settings
from infrastructure.external.payments import get_payment_gateway
from infrastructure.notifications import logging_listener_factory


@lru_cache(maxsize=1)
def get_gateway_context() -> GatewayContext:
    return build_gateway_context(
        payment_settings,
        gateway=get_payment_gateway(payment_settings),
        listener_factory=logging_listener_factory,
    )


def get_payment_service(context: GatewayContext = Depends(get_gateway_context)) -> PaymentService:
    return PaymentService(context)


async def shutdown_gateway_context() -> None:
    """关闭已创建的网关客户端（未创建则跳过）"""
    if get_gateway_context.cache_info().currsize:
        await PaymentService(get_gateway_context()).aclose()
        get_gateway_context.cache_clear()
