from .logging_listener import LoggingPaymentListener, logging_listener_factory

__all__ = ["LoggingPaymentListener", "logging_listener_factory"]
