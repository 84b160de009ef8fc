# CLI Module
