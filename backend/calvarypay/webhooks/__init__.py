"""Inbound payment-provider webhooks: signature check and reconciliation."""
