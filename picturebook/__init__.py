"""picturebook - illustrated picture books generated from story text"""

__version__ = "0.1.0"
