"""Output sinks for realtime snapshots"""
