"""
tcpgate
~~~~~~~
Raw TCP endpoint with optional Basic-Auth and a per-connection idle timeout.
"""
