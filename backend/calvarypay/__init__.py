"""CalvaryPay payment service."""
