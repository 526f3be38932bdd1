"""HTTP blueprints; registered under API_PREFIX in flux.create_app"""
