"""Durable document storage"""
