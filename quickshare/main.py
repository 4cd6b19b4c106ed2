from dify_plugin import DifyPluginEnv, Plugin

from store.runtime import bootstrap

plugin = Plugin(DifyPluginEnv(MAX_REQUEST_TIMEOUT=120))

if __name__ == "__main__":
    # Reconcile storage before the plugin accepts any upload
    bootstrap()
    plugin.run()
