"""Registry persistence"""
