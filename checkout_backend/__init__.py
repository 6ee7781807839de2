"""Checkout backend: Stripe-hosted checkout over file-backed product stock."""
