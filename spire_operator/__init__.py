"""SPIRE Operator core - validate, render, plan, apply and observe SPIRE deployments"""
__version__ = "0.1.0"
