"""auth/ -- Identity and access-control core for Auth².

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
core/ never imports from auth/.
"""
