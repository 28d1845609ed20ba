"""Session lifecycle, context and message bus"""
