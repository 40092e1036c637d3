"""
Row storage for catalogs and the cores and systems installed from them.
"""
