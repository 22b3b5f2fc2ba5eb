"""Commerce service: checkout, print fulfillment and payment webhooks."""
