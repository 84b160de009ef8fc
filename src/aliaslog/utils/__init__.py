# Utilities Module
