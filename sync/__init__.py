"""Sync core: mirror, fetch, retry, batch and coordination"""
