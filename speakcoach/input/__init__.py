"""Capture providers"""
