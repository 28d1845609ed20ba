"""Voice and facial signal analysis"""
