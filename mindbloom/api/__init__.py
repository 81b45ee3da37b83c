"""REST API for MindBloom"""
