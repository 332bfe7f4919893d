from monjapro.db import get_db
from monjapro.services.mercadopago import MercadoPagoClient


def get_mercadopago_client() -> MercadoPagoClient:
    return MercadoPagoClient.from_settings()


__all__ = ["get_db", "get_mercadopago_client"]
