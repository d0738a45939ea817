"""Registry services"""
