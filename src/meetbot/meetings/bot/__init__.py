"""Meeting bot management -- Recall.ai bot creation and post-call artifacts.

Provides RecallClient for Recall.ai REST API interaction, BotManager for
sending a bot into a call, and ArtifactResolver for turning a finished
bot into video/audio download URLs.
"""
