from grub_early.api.main import app

if __name__ == "__main__":
    import os
    import uvicorn
    host = os.getenv("GRUB_EARLY_HOST", "127.0.0.1")
    port = int(os.getenv("GRUB_EARLY_PORT", "8001"))
    uvicorn.run(app, host=host, port=port)
