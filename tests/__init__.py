"""Test package for chat-relay."""
from dotenv import load_dotenv, find_dotenv

# pick up MONGODB_CONNECTION etc. from a .env in the repo, if there is one
load_dotenv(find_dotenv(usecwd=True))
