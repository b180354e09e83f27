from __future__ import annotations

from enum import Enum


class ActionType(str, Enum):
    SALE = "SALE"
    UPDATE_SALE = "UPDATE_SALE"
    DELETE_SALE = "DELETE_SALE"
    ADD_PRODUCT = "ADD_PRODUCT"
    UPDATE_PRODUCT = "UPDATE_PRODUCT"
    DELETE_PRODUCT = "DELETE_PRODUCT"
    ADJUST_STOCK = "ADJUST_STOCK"
    RECEIVE_STOCK = "RECEIVE_STOCK"
    ADD_USER = "ADD_USER"
    UPDATE_USER = "UPDATE_USER"
    DELETE_USER = "DELETE_USER"
    OPEN_SHIFT = "OPEN_SHIFT"
    CLOSE_SHIFT = "CLOSE_SHIFT"
    LOG = "LOG"
    UPDATE_SETTINGS = "UPDATE_SETTINGS"
    VOID_REQUEST = "VOID_REQUEST"
    VOID_APPROVED = "VOID_APPROVED"
    VOID_REJECTED = "VOID_REJECTED"
    STOCK_CHANGE_REQUEST = "STOCK_CHANGE_REQUEST"
    STOCK_CHANGE_APPROVED = "STOCK_CHANGE_APPROVED"
    STOCK_CHANGE_REJECTED = "STOCK_CHANGE_REJECTED"
    PRODUCT_SALE_LOG = "PRODUCT_SALE_LOG"
    UPDATE_PRODUCT_SALE_LOG = "UPDATE_PRODUCT_SALE_LOG"
    DELETE_PRODUCT_SALE_LOG = "DELETE_PRODUCT_SALE_LOG"


def action_value(action_type: ActionType | str) -> str:
    return action_type.value if isinstance(action_type, ActionType) else str(action_type)
