"""Crypto price digest bot."""
