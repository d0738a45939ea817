"""Scheduled jobs"""
