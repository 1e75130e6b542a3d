"""CitySounds HTTP service: webhooks, scheduled sync and the concert catalog."""
