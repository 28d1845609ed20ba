"""SpeakCoach: realtime speaking-performance analysis"""

__version__ = "0.1.0"
