"""chatrelay: request orchestration between a chat front end and LLM providers."""
