"""Authentication and request signing"""
