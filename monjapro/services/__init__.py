"""Service layer: persistence stores, Mercado Pago client and reconciliation."""
