"""Delivery - outbound email providers"""
