"""Fakes and log capture shared by unit and feature tests."""
