"""
edscript

Loader and interpreter for edbrowse-style rc files:
- Mail accounts, plugins and sql table descriptors
- Browsing rules (javascript, certificates, proxies, user agents)
- Mail filters
- User-defined functions with loops and conditionals
"""

__version__ = "0.1.0"
