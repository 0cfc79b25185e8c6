"""WASM filter configuration and host-call handling."""