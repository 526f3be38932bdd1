"""Middleware package"""
from .request_id import RequestIdMiddleware, RequestIdFilter, configure_logging

__all__ = ['RequestIdMiddleware', 'RequestIdFilter', 'configure_logging']
