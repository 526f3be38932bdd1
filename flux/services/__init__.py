"""Domain services: each module owns one aggregate and its conditional writes"""
